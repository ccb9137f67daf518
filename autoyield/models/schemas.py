from __future__ import annotations

from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field


class AmountRequest(BaseModel):
    """Deposit / withdraw request. ``amount`` is a human decimal string such as ``"12.5"``."""

    amount: Optional[str] = None
    chainId: Optional[int] = Field(default=None, validation_alias=AliasChoices("chainId", "chain_id"))


class MintRequest(BaseModel):
    amount: str = "1000"
    chainId: Optional[int] = Field(default=None, validation_alias=AliasChoices("chainId", "chain_id"))


class RebalanceRequest(BaseModel):
    chainId: Optional[int] = Field(default=None, validation_alias=AliasChoices("chainId", "chain_id"))


class SetApyRequest(BaseModel):
    apyPercent: float = Field(validation_alias=AliasChoices("apyPercent", "apy_percent", "apy"))
    chainId: Optional[int] = Field(default=None, validation_alias=AliasChoices("chainId", "chain_id"))


class BalancesSchema(BaseModel):
    tokenBalance: str
    tokenBalanceDisplay: str
    vaultBalance: str
    vaultBalanceDisplay: str
    allowance: str


class OperationResponse(BaseModel):
    success: bool
    action: str
    state: str
    txHash: Optional[str] = None
    approvalTxHash: Optional[str] = None
    approvalIssued: bool = False
    error: Optional[str] = None
    balances: Optional[BalancesSchema] = None
    timestamp: str


class VenueSchema(BaseModel):
    name: str
    apyBps: int
    apy: str
    balance: str
    balanceDisplay: str
    isActive: bool


class VaultOverviewResponse(BaseModel):
    account: Optional[str] = None
    chainId: int
    userBalance: str
    userBalanceDisplay: str
    totalAssets: str
    totalAssetsDisplay: str
    activeVenue: VenueSchema
    venueApys: dict[str, str]
    venues: List[VenueSchema]
    tokenSupply: str
    tokenSupplyDisplay: str


class RebalanceEventSchema(BaseModel):
    id: str
    timestamp: Optional[str] = None
    fromVenue: str
    fromVenueKnown: bool
    fromVenueAddress: Optional[str] = None
    toVenue: str
    toVenueKnown: bool
    toVenueAddress: Optional[str] = None
    amount: str
    amountDisplay: str
    fromApy: str
    toApy: str
    yieldImprovement: str
    txHash: str
    shortTxHash: str
    blockNumber: int
    logIndex: int


class QueryErrorSchema(BaseModel):
    kind: str
    message: str


class RebalanceHistoryResponse(BaseModel):
    chainId: int
    vaultAddress: Optional[str] = None
    source: str
    error: Optional[QueryErrorSchema] = None
    events: List[RebalanceEventSchema]
