from counselflow.models.ai_usage import AiUsageRecord

__all__ = [
    "AiUsageRecord",
]
