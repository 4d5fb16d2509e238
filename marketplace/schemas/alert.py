from pydantic import BaseModel


class AlertStatsOut(BaseModel):
    failedCount: int
    deliveredCount: int
    averageAttempts: float
