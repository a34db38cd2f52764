"""Message-processing pipeline: context, stages and orchestrator."""
