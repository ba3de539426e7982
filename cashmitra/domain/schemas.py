"""
Commission rate table schemas - validate admin-supplied rate tables
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CategoryRates(BaseModel):
    """Complete per-category rates for one order type"""
    model_config = ConfigDict(extra="forbid")

    mobile: float = Field(ge=0, le=100)
    tablet: float = Field(ge=0, le=100)
    laptop: float = Field(ge=0, le=100)
    accessories: float = Field(ge=0, le=100)


class CommissionRateTable(BaseModel):
    """Global default rates; every order type and category is required"""
    model_config = ConfigDict(extra="forbid")

    buy: CategoryRates
    sell: CategoryRates


class PartialCategoryRates(BaseModel):
    """Partner override for one order type; missing categories fall back to defaults"""
    model_config = ConfigDict(extra="forbid")

    mobile: Optional[float] = Field(default=None, ge=0, le=100)
    tablet: Optional[float] = Field(default=None, ge=0, le=100)
    laptop: Optional[float] = Field(default=None, ge=0, le=100)
    accessories: Optional[float] = Field(default=None, ge=0, le=100)


class PartnerRateOverride(BaseModel):
    """Partner-specific override table"""
    model_config = ConfigDict(extra="forbid")

    buy: Optional[PartialCategoryRates] = None
    sell: Optional[PartialCategoryRates] = None

    def to_rates(self) -> dict[str, dict[str, float]]:
        """Only the rates that were actually given, in the stored JSON shape"""
        return self.model_dump(exclude_none=True)
