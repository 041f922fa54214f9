from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field, confloat

Currency = Literal["KES", "NGN", "GHS"]


class VerifyAccountRequest(BaseModel):
    accountNumber: str = Field(..., min_length=1)
    bankCode: str = Field(..., min_length=1)


class RecipientDetails(BaseModel):
    institution: str = Field(..., examples=["SAFARICOM"])
    accountIdentifier: str = Field(..., examples=["254712345678"])
    accountName: str
    currency: Currency = "KES"
    memo: Optional[str] = None


class CreateOrderRequest(BaseModel):
    amount: confloat(gt=0) = Field(..., description="USDC amount")
    rate: confloat(gt=0)
    walletAddress: str = Field(..., min_length=1)
    recipient: RecipientDetails
    returnAddress: Optional[str] = None
    reference: Optional[str] = None
    fid: Optional[int] = None
    carrier: Optional[str] = None
    token: str = "USDC"
    network: str = "base"


class PollRequest(BaseModel):
    maxAttempts: Optional[int] = Field(None, ge=1, le=200)
    baseDelay: Optional[float] = Field(None, gt=0, description="Seconds before the second poll")
    maxDelay: Optional[float] = Field(None, gt=0)
    timeoutSeconds: Optional[float] = Field(None, gt=0, le=900)
    backoffFactor: Optional[float] = Field(None, ge=1)


class PaycrestWebhookRecipient(BaseModel):
    institution: Optional[str] = None
    accountIdentifier: Optional[str] = None
    accountName: Optional[str] = None
    currency: Optional[str] = None


class PaycrestWebhookData(BaseModel):
    id: str
    status: Optional[str] = None
    amount: Optional[str] = None
    amountPaid: Optional[str] = None
    rate: Optional[str] = None
    txHash: Optional[str] = None
    providerId: Optional[str] = None
    reference: Optional[str] = None
    recipient: Optional[PaycrestWebhookRecipient] = None


class PaycrestWebhookEvent(BaseModel):
    event: str
    data: PaycrestWebhookData


class TransakWebhookData(BaseModel):
    id: str
    status: Optional[str] = None
    partnerOrderId: Optional[str] = None
    transactionHash: Optional[str] = None
    statusMessage: Optional[str] = None


class TransakWebhookEvent(BaseModel):
    eventID: str
    webhookData: TransakWebhookData


class PretiumDisburseRequest(BaseModel):
    amount: confloat(gt=0) = Field(..., description="USDC amount")
    accountName: str = Field(..., min_length=1)
    transactionHash: str = Field(..., min_length=1)
    returnAddress: str = Field(..., min_length=1)
    currency: Currency = "KES"
    fid: Optional[int] = None
    phoneNumber: Optional[str] = None
    mobileNetwork: Optional[str] = None
    tillNumber: Optional[str] = None
    paybillNumber: Optional[str] = None
    paybillAccount: Optional[str] = None
    # NGN bank transfers
    accountNumber: Optional[str] = None
    bankCode: Optional[str] = None
    bankName: Optional[str] = None


class PretiumWebhookPayload(BaseModel):
    transaction_code: Optional[str] = None
    status: Optional[str] = None
    receipt_number: Optional[str] = None
    public_name: Optional[str] = None
    message: Optional[str] = None
    is_released: Optional[bool] = None


class DashboardLogin(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class ProviderStats(BaseModel):
    total: int = 0
    completed: int = 0
    failed: int = 0
    volume: float = 0.0
    successRate: float = 0.0


class CurrencyStats(BaseModel):
    orders: int = 0
    volume: float = 0.0
    localVolume: float = 0.0


class DashboardStats(BaseModel):
    totalOrders: int
    successRate: float
    failedOrders: int
    pendingOrders: int
    totalUSDCVolume: float
    uniqueWallets: int
    totalRevenue: float
    stuckOrders: int
    providers: Dict[str, ProviderStats]
    currencies: Dict[str, CurrencyStats]


class UnifiedOrder(BaseModel):
    id: str
    provider: str
    orderId: str
    walletAddress: Optional[str] = None
    transactionHash: Optional[str] = None
    status: Optional[str] = None
    normalizedStatus: Literal["pending", "processing", "completed", "failed"]
    amountInUsdc: float = 0.0
    amountInLocal: float = 0.0
    localCurrency: Optional[str] = None
    exchangeRate: Optional[float] = None
    senderFee: float = 0.0
    accountName: Optional[str] = None
    receiptNumber: Optional[str] = None
    createdAt: Optional[str] = None
    completedAt: Optional[str] = None


class UnifiedOrderPage(BaseModel):
    orders: List[UnifiedOrder]
    total: int
    page: int
    limit: int
