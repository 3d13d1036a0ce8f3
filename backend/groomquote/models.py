from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

Role = Literal["CUSTOMER", "BUSINESS", "ADMIN"]
PetType = Literal["DOG", "CAT", "OTHER"]
ServiceType = Literal["BASIC", "SPECIAL", "BATH", "STYLING"]
ItemType = Literal["BASIC", "ADDITIONAL", "SPECIAL"]
RequestStatus = Literal["PENDING", "OFFERED", "ACCEPTED", "COMPLETED", "CANCELLED"]
ReviewStatus = Literal["NOT_REVIEWED", "REVIEWED"]
OfferStatus = Literal["PENDING", "ACCEPTED", "REJECTED"]
OfferPaymentStatus = Literal["NOT_PAID", "PAID", "REFUNDED"]
PaymentMethod = Literal[
    "CARD",
    "VIRTUAL_ACCOUNT",
    "ACCOUNT_TRANSFER",
    "PHONE",
    "KAKAO_PAY",
    "TOSS_PAY",
    "NAVER_PAY",
    "PAYCO",
]
PaymentStatus = Literal["PENDING", "READY", "IN_PROGRESS", "DONE", "CANCELED", "FAILED", "EXPIRED"]
NotificationCategory = Literal["quote", "payment", "review", "chat", "system"]

SERVICE_TYPE_LABELS: Dict[str, str] = {
    "BASIC": "Basic grooming",
    "SPECIAL": "Special care",
    "BATH": "Bath & hygiene",
    "STYLING": "Styling",
}


class Actor(BaseModel):
    user_id: str
    role: Role


class UserProfile(BaseModel):
    id: str
    name: str
    role: Role
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: str = ""
    business_name: Optional[str] = None
    average_rating: Optional[float] = None
    completed_services: int = 0
    notification_enabled: bool = True
    created_at: str = ""

    @property
    def display_name(self) -> str:
        return self.business_name or self.name


class QuoteItem(BaseModel):
    id: str = ""
    name: str
    description: str = ""
    price: int = Field(default=0, ge=0)
    type: ItemType = "BASIC"


class QuoteRequest(BaseModel):
    id: str
    customer_id: str
    pet_type: PetType
    pet_breed: str = ""
    pet_age: Optional[int] = None
    pet_weight: Optional[float] = None
    service_type: ServiceType
    description: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: str = ""
    status: RequestStatus = "PENDING"
    review_status: ReviewStatus = "NOT_REVIEWED"
    preferred_date: Optional[str] = None
    pet_photos: list[str] = Field(default_factory=list)
    items: list[QuoteItem] = Field(default_factory=list)
    version: int = 0
    created_at: str
    updated_at: str


class QuoteResponse(BaseModel):
    id: str
    quote_request_id: str
    business_id: str
    price: int = Field(gt=0)
    description: str = ""
    estimated_time: str = ""
    available_date: Optional[str] = None
    status: OfferStatus = "PENDING"
    payment_status: OfferPaymentStatus = "NOT_PAID"
    before_photos: list[str] = Field(default_factory=list)
    after_photos: list[str] = Field(default_factory=list)
    created_at: str
    updated_at: str


class Payment(BaseModel):
    id: str
    customer_id: str
    business_id: str
    quote_response_id: str
    amount: int = Field(gt=0)
    method: PaymentMethod = "CARD"
    status: PaymentStatus = "PENDING"
    payment_key: Optional[str] = None
    order_id: str
    receipt_url: Optional[str] = None
    cancel_reason: Optional[str] = None
    refund_required: bool = False
    paid_at: Optional[str] = None
    created_at: str
    updated_at: str


class Review(BaseModel):
    id: str
    customer_id: str
    business_id: str
    quote_response_id: Optional[str] = None
    rating: int
    content: str = ""
    tags: list[str] = Field(default_factory=list)
    is_public: bool = True
    created_at: str
    updated_at: str


class ChatRoom(BaseModel):
    id: str
    quote_request_id: str
    quote_response_id: str
    customer_id: str
    business_id: str
    last_activity_at: str
    created_at: str


class ChatMessage(BaseModel):
    id: str
    room_id: str
    sender_id: str
    content: str
    read: bool = False
    system: bool = False
    created_at: str


class QuoteRequestCreate(BaseModel):
    pet_type: PetType
    pet_breed: str = ""
    pet_age: Optional[int] = Field(default=None, ge=0)
    pet_weight: Optional[float] = Field(default=None, gt=0)
    service_type: ServiceType
    description: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: str = ""
    preferred_date: Optional[str] = None
    pet_photos: list[str] = Field(default_factory=list)
    items: list[QuoteItem] = Field(default_factory=list)


class QuoteOfferCreate(BaseModel):
    price: int = Field(gt=0)
    description: str = ""
    estimated_time: str = ""
    available_date: Optional[str] = None


class QuoteRequestDetails(BaseModel):
    request: QuoteRequest
    offers: list[QuoteResponse] = Field(default_factory=list)
    viewer_role: Literal["customer", "business"]


class CompletionPhotosRequest(BaseModel):
    before_photos: list[str] = Field(default_factory=list)
    after_photos: list[str] = Field(default_factory=list)


class Coordinates(BaseModel):
    latitude: float
    longitude: float


class PaymentPrepareRequest(BaseModel):
    offer_id: str
    method: PaymentMethod = "CARD"


class PaymentPreparation(BaseModel):
    payment_id: str
    order_id: str
    amount: int
    gateway_handle: Dict[str, Any] = Field(default_factory=dict)


class PaymentCallback(BaseModel):
    order_id: str
    amount: int
    payment_key: Optional[str] = None


class PaymentCancelRequest(BaseModel):
    reason: str = ""


class ReviewCreateRequest(BaseModel):
    offer_id: str
    rating: int
    content: str = ""
    tags: list[str] = Field(default_factory=list)


class ReviewUpdateRequest(BaseModel):
    rating: int
    content: str = ""
    tags: list[str] = Field(default_factory=list)


class BusinessStatistics(BaseModel):
    business_id: str
    business_name: str
    total_quote_offers: int = 0
    accepted_quote_offers: int = 0
    acceptance_rate: float = 0.0
    total_revenue: int = 0
    average_revenue: int = 0
    revenue_by_month: Dict[str, int] = Field(default_factory=dict)
    revenue_by_service: Dict[str, int] = Field(default_factory=dict)
    total_reviews: int = 0
    average_rating: float = 0.0
    rating_distribution: Dict[int, int] = Field(default_factory=dict)
    popular_tags: Dict[str, int] = Field(default_factory=dict)


class AuthRegisterRequest(BaseModel):
    user_id: str
    name: str
    role: Role = "CUSTOMER"
    password: str = "groomquote-demo"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: str = ""
    business_name: Optional[str] = None


class AuthLoginRequest(BaseModel):
    user_id: str
    password: str = "groomquote-demo"


class AuthLoginResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    user_id: str
    role: Role
    expires_at: str


class AuthMeResponse(BaseModel):
    user_id: str
    role: Role


class DeviceTokenRegisterRequest(BaseModel):
    user_id: str
    device_token: str
    platform: Literal["android", "ios", "web"] = "android"


class NotificationRecord(BaseModel):
    id: str
    user_id: str
    title: str
    body: str
    category: NotificationCategory = "system"
    read: bool = False
    created_at: str
    deep_link: Optional[str] = None


class ChatRoomOpenRequest(BaseModel):
    quote_request_id: str
    business_id: Optional[str] = None


class ChatMessageCreate(BaseModel):
    content: str = Field(min_length=1, max_length=2000)


class ChatReadRequest(BaseModel):
    message_ids: Optional[list[str]] = None


class ChatRoomSummary(BaseModel):
    room: ChatRoom
    counterpart_id: str
    counterpart_name: str
    last_message: Optional[str] = None
    unread_count: int = 0


class ChatRoomDetails(BaseModel):
    room: ChatRoom
    counterpart_id: str
    counterpart_name: str
    messages: list[ChatMessage]
