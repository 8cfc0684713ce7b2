from __future__ import annotations

from datetime import date
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel


class MetricBucket(BaseModel):
    date: date
    time: float = 0.0
    disbursement: float = 0.0
    adjustment: float = 0.0
    billing: float = 0.0
    provision: float = 0.0
    fee: float = 0.0
    receipt: float = 0.0
    other_net_billing: float = 0.0
    unclassified: float = 0.0
    balance: float = 0.0


class SeriesSummary(BaseModel):
    total_time: float = 0.0
    total_disbursement: float = 0.0
    total_adjustment: float = 0.0
    total_billing: float = 0.0
    total_provision: float = 0.0
    total_fee: float = 0.0
    total_receipt: float = 0.0
    total_other_net_billing: float = 0.0
    total_unclassified: float = 0.0
    opening_balance: float = 0.0
    current_balance: float = 0.0


class LockupPointOut(BaseModel):
    month: date
    balance: float
    trailing_sum: float
    lockup_days: float


class SeriesOut(BaseModel):
    series: List[MetricBucket]
    summary: SeriesSummary
    lockup: Optional[List[LockupPointOut]] = None


class CategoryInfo(BaseModel):
    key: str
    label: str


class GraphResponse(BaseModel):
    entity_scope: Literal["client", "group", "task"]
    entity_key: str
    metric: Literal["wip", "debtors"]
    granularity: Literal["day", "month"]
    resolution: Literal["high", "standard", "low"]
    start_date: date
    end_date: date
    overall: SeriesOut
    by_category: Dict[str, SeriesOut]
    categories: List[CategoryInfo]


class OverviewMonth(BaseModel):
    month: date
    net_revenue: float = 0.0
    billings: float = 0.0
    collections: float = 0.0
    wip_balance: float = 0.0
    debtors_balance: float = 0.0
    trailing12_revenue: float = 0.0
    trailing12_billings: float = 0.0
    wip_lockup_days: float = 0.0
    debtors_lockup_days: float = 0.0


class OverviewResponse(BaseModel):
    entity_scope: Literal["client", "group", "task"]
    entity_key: str
    start_date: date
    end_date: date
    months: List[OverviewMonth]
