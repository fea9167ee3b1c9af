"""
Database Schemas for Vanijya AI (MongoDB collections)

Each of the first three Pydantic models describes one collection:
- User -> "users"
- InventoryItem -> "inventories"
- Listing -> "buyersellers"

The *In models below them are request bodies. They are validated once at
the API boundary, so handlers only ever see clean, typed values. The last
group checks the shape of JSON the language model answers with.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

InventoryCategory = Literal["Vegetables", "Fruits", "Grains", "Pulses", "Spices", "Other"]
InventoryUnit = Literal["kg", "quintal", "ton", "pieces", "liters"]
ListingCategory = Literal["Vegetables", "Fruits", "Grains", "Pulses", "Spices", "Dairy", "Other"]
ListingUnit = Literal["kg", "quintal", "ton", "pieces", "liters", "bags"]


class User(BaseModel):
    email: str
    name: str
    phone: str
    address: str
    googleId: str
    avatar: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class InventoryItem(BaseModel):
    userId: str  # owner email
    name: str
    category: InventoryCategory
    currentStock: float = Field(..., ge=0)
    unit: InventoryUnit
    minThreshold: float = Field(..., ge=0)
    maxCapacity: float = Field(..., gt=0)
    avgPrice: float = Field(..., ge=0)
    lastUpdated: Optional[datetime] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class Listing(BaseModel):
    userId: str  # owner email
    userEmail: str
    userName: str
    userPhone: Optional[str] = None
    userWhatsApp: Optional[str] = None
    type: Literal["buyer", "seller"]
    productName: str
    category: ListingCategory
    quantity: float = Field(..., gt=0)
    unit: ListingUnit
    pricePerUnit: Optional[float] = Field(None, ge=0)
    location: str
    description: str
    contactEmail: Optional[str] = None
    contactPhone: Optional[str] = None
    contactWhatsApp: Optional[str] = None
    isActive: bool = True
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


# ------------------------- Request bodies -------------------------

class RequestBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


class InventoryIn(RequestBody):
    name: str = Field(..., min_length=1)
    category: InventoryCategory
    currentStock: float = Field(..., ge=0)
    unit: InventoryUnit
    minThreshold: float = Field(..., ge=0)
    maxCapacity: float = Field(..., gt=0)
    avgPrice: float = Field(..., ge=0)

    @model_validator(mode="after")
    def capacity_above_threshold(self):
        if self.maxCapacity <= self.minThreshold:
            raise ValueError("Maximum capacity must be greater than minimum threshold")
        return self


class ListingIn(RequestBody):
    type: Literal["buyer", "seller"]
    productName: str = Field(..., min_length=1)
    category: ListingCategory
    quantity: float = Field(..., gt=0)
    unit: ListingUnit
    pricePerUnit: Optional[float] = Field(None, ge=0)
    location: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    userName: Optional[str] = None
    userPhone: Optional[str] = None
    userWhatsApp: Optional[str] = None
    contactEmail: Optional[str] = None
    contactPhone: Optional[str] = None
    contactWhatsApp: Optional[str] = None


class ListingUpdateIn(ListingIn):
    isActive: bool = True


class ProfileIn(RequestBody):
    email: Optional[EmailStr] = None
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    googleId: str = Field(..., min_length=1)
    avatar: Optional[str] = None


class ProfileUpdateIn(RequestBody):
    email: Optional[EmailStr] = None
    name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = Field(None, min_length=1)
    address: Optional[str] = Field(None, min_length=1)
    avatar: Optional[str] = None


class LiveMarketDataIn(RequestBody):
    query: str = Field(..., min_length=1)
    location: Optional[str] = None


class MarketDataIn(RequestBody):
    market: str = Field(..., min_length=1)
    location: Optional[str] = None


class PriceAnalysisIn(RequestBody):
    product: str = Field(..., min_length=1)
    language: str = "en"


class NegotiationIn(RequestBody):
    product: str = Field(..., min_length=1)
    currentPrice: float = Field(..., gt=0)
    targetPrice: float = Field(..., gt=0)
    language: str = "en"


class TranslateIn(RequestBody):
    text: str = Field(..., min_length=1)
    targetLanguage: str = Field(..., min_length=1)


# ------------------------- Model answers -------------------------

class PriceRange(BaseModel):
    min: float
    max: float


class NearbyMandi(BaseModel):
    name: str
    price: float
    distance: str


class PriceAnalysis(BaseModel):
    product: str = Field(..., min_length=1)
    fairPriceRange: PriceRange
    confidence: float
    marketInsights: List[str] = []
    negotiationTips: List[str] = []
    nearbyMandis: List[NearbyMandi] = []
