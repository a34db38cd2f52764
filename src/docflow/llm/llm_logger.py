"""
LLM interaction logging.

Provides detailed logging of LLM requests and responses for debugging,
cost tracking, and auditing purposes.
"""

import json
import logging
import logging.handlers
import time
from datetime import datetime, timezone

from docflow.config import settings
from docflow.llm.providers.base import LLMResponse

logger = logging.getLogger(__name__)


class LLMLogger:
    """
    Logger for LLM API interactions.

    Logs requests, responses, cache hits and errors to a separate log file
    when LLM logging is enabled in configuration.
    """

    def __init__(self):
        self.llm_logger = logging.getLogger("docflow.llm.requests")
        self.enabled = settings.llm_logging_enabled

        if self.enabled and settings.log_file_enabled and not self.llm_logger.handlers:
            self._setup_file_handler()

    def _setup_file_handler(self) -> None:
        """Setup dedicated file handler for LLM logs."""
        llm_dir = settings.log_directory / "llm"
        llm_dir.mkdir(parents=True, exist_ok=True)

        handler = logging.handlers.RotatingFileHandler(
            llm_dir / "requests.log",
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        handler.setFormatter(
            logging.Formatter(
                fmt="[%(asctime)s] [%(levelname)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

        self.llm_logger.addHandler(handler)
        self.llm_logger.setLevel(logging.INFO)
        self.llm_logger.propagate = False

    def log_request(self, purpose: str, model: str, prompt: str) -> str:
        """
        Log request details.

        Returns:
            str: Request ID for correlating with response
        """
        if not self.enabled or not settings.llm_log_requests:
            return ""

        request_id = f"{purpose}_{int(time.time() * 1000)}"
        log_entry = {
            "type": "request",
            "request_id": request_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "purpose": purpose,
            "model": model,
            "prompt_preview": prompt[:500] + "..." if len(prompt) > 500 else prompt,
            "prompt_length": len(prompt),
        }
        self.llm_logger.info(f"REQUEST: {json.dumps(log_entry)}")
        return request_id

    def log_response(self, request_id: str, response: LLMResponse) -> None:
        if not self.enabled or not settings.llm_log_responses:
            return

        content = response.content
        log_entry = {
            "type": "response",
            "request_id": request_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "model": response.model,
            "finish_reason": response.finish_reason,
            "content_length": len(content),
            "duration_ms": round(response.duration_ms, 2),
            "tokens": {
                "prompt": response.prompt_tokens,
                "completion": response.completion_tokens,
                "total": response.total_tokens,
            },
            "content_preview": content[:200] + "..." if len(content) > 200 else content,
        }
        self.llm_logger.info(f"RESPONSE: {json.dumps(log_entry)}")

    def log_error(self, request_id: str, error: Exception) -> None:
        if not self.enabled:
            return

        log_entry = {
            "type": "error",
            "request_id": request_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "error_type": type(error).__name__,
            "error_message": str(error),
        }
        self.llm_logger.error(f"ERROR: {json.dumps(log_entry)}")

    def log_cache_hit(self, purpose: str, cache_key: str) -> None:
        if not self.enabled:
            return

        log_entry = {
            "type": "cache_hit",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "purpose": purpose,
            "cache_key": cache_key,
        }
        self.llm_logger.info(f"CACHE_HIT: {json.dumps(log_entry)}")


llm_logger = LLMLogger()
