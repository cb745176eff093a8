"""AI reply schemas - Pydantic models the structured model replies must match"""

from typing import Literal, Optional

from pydantic import BaseModel, Field


class SentimentAnalysis(BaseModel):
    sentiment: Literal["positive", "neutral", "negative"]
    confidence: float = Field(ge=0, le=1)
    keywords: list[str] = []


class OptimizedSlot(BaseModel):
    time: str
    barberId: str
    serviceId: Optional[str] = None
    confidence: float = Field(ge=0, le=1)
    reason: str


class ScheduleOptimization(BaseModel):
    optimizedSlots: list[OptimizedSlot] = []
    recommendations: list[str] = []
    efficiency: float = Field(ge=0, le=1)


class RecommendedItem(BaseModel):
    id: str
    name: str
    reason: str
    confidence: float = Field(ge=0, le=1)


class NextAppointment(BaseModel):
    suggestedDate: str
    reason: str


class PersonalizedRecommendations(BaseModel):
    services: list[RecommendedItem] = []
    products: list[RecommendedItem] = []
    nextAppointment: NextAppointment


class Trend(BaseModel):
    metric: str
    trend: Literal["up", "down", "stable"]
    change: float
    description: str


class Forecast(BaseModel):
    revenue: float
    appointments: int
    confidence: float = Field(ge=0, le=1)


class BusinessInsights(BaseModel):
    insights: list[str] = []
    trends: list[Trend] = []
    recommendations: list[str] = []
    forecast: Forecast


class MarketingContent(BaseModel):
    content: str
    subject: Optional[str] = None
    hashtags: Optional[list[str]] = None
    callToAction: str
