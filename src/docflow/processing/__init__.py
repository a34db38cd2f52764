"""Batch processing: selection, watermarks, the processor and its scheduler."""
