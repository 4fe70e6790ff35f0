"""
Database Schemas for the tabletop session marketplace

Each Pydantic model represents a MongoDB collection. Collection name = lowercase class name.

- User -> user
- Game -> game
- Booking -> booking
- Review -> review
- Conversation -> conversation
- Message -> message
- FriendRequest -> friendrequest
- Friendship -> friendship
- Notification -> notification
- Favorite -> favorite
- Setting -> setting

References to other documents are stored as ObjectId strings.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

UserRole = Literal["player", "gm_applicant", "approved_gm", "admin"]
GameSystem = Literal["dnd_5e", "pathfinder_2e", "call_of_cthulhu", "vampire_masquerade", "cyberpunk_red", "other"]
Platform = Literal["online", "in_person", "hybrid"]
SessionType = Literal["one_shot", "campaign", "mini_series"]
ExperienceLevel = Literal["beginner", "intermediate", "advanced", "all_levels"]
BookingType = Literal["instant", "request"]
BookingStatus = Literal["pending", "confirmed", "cancelled", "completed"]
ApplicationStatus = Literal["pending", "approved", "rejected"]
FriendRequestStatus = Literal["pending", "accepted", "declined"]
MessageType = Literal["text", "image", "file", "game_invitation"]
NotificationType = Literal[
    "booking_confirmed",
    "booking_cancelled",
    "game_reminder",
    "review_received",
    "message_received",
    "referral_credit",
    "friend_request",
    "friend_accepted",
    "system_announcement",
    "maintenance",
    "event_notification",
    "game_update",
    "admin_action",
]
NotificationPriority = Literal["low", "medium", "high", "urgent"]
NotificationCategory = Literal["social", "booking", "system", "game", "payment"]

GM_ROLES = ("approved_gm", "admin")


# -----------------------------------------------------------------------------
# Users
# -----------------------------------------------------------------------------
class Preferences(BaseModel):
    systems: List[GameSystem] = Field(default_factory=list)
    experience_level: ExperienceLevel = "beginner"
    platforms: List[Platform] = Field(default_factory=lambda: ["online"])


class Stats(BaseModel):
    games_played: int = 0
    games_hosted: int = 0
    average_rating: float = Field(0, ge=0, le=5)
    total_reviews: int = 0


class Pricing(BaseModel):
    session_price: float = Field(15.0, ge=0)
    currency: str = "USD"


class Profile(BaseModel):
    languages: List[str] = Field(default_factory=list)
    favorite_genres: List[str] = Field(default_factory=list)


class FeaturedPrompt(BaseModel):
    prompt_id: str
    custom_text: str = Field(..., max_length=200)


class GMApplication(BaseModel):
    experience: str = Field(..., max_length=2000)
    preferred_systems: List[str]
    availability: str = Field(..., max_length=1000)
    sample_game_description: str = Field(..., max_length=2000)
    references: str = Field("", max_length=1000)
    status: ApplicationStatus = "pending"
    submitted_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None


class User(BaseModel):
    email: EmailStr = Field(..., description="Unique email address, lowercased")
    username: str = Field(..., min_length=3, max_length=30, description="Unique handle")
    password_hash: str = Field(..., description="BCrypt hashed password")
    first_name: str
    last_name: str
    role: UserRole = Field("player", description="player | gm_applicant | approved_gm | admin")
    avatar: Optional[str] = Field(None, description="Avatar URL")
    bio: Optional[str] = Field(None, max_length=2500)
    timezone: str = "UTC"
    pronouns: List[str] = Field(default_factory=list)
    identity_tags: List[str] = Field(default_factory=list)
    game_styles: List[str] = Field(default_factory=list)
    themes: List[str] = Field(default_factory=list)
    preferences: Preferences = Field(default_factory=Preferences)
    profile: Profile = Field(default_factory=Profile)
    stats: Stats = Field(default_factory=Stats)
    pricing: Pricing = Field(default_factory=Pricing)
    referral_code: Optional[str] = None
    referral_credits: float = Field(0, ge=0)
    featured_prompts: List[FeaturedPrompt] = Field(default_factory=list)
    gm_application: Optional[GMApplication] = None
    is_active: bool = Field(True, description="Whether user can log in")
    last_login_at: Optional[datetime] = None


# -----------------------------------------------------------------------------
# Games & bookings
# -----------------------------------------------------------------------------
class Recurrence(BaseModel):
    frequency: Literal["weekly", "biweekly", "monthly"]
    end_date: Optional[datetime] = None


class Schedule(BaseModel):
    start_time: datetime
    end_time: datetime
    timezone: str = "UTC"
    recurring: Optional[Recurrence] = None


class Location(BaseModel):
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    coordinates: Optional[List[float]] = Field(None, description="[longitude, latitude]")


class OnlineDetails(BaseModel):
    platform: Optional[str] = Field(None, max_length=50, description="Discord, Roll20, ...")
    invite_link: Optional[str] = Field(None, max_length=500)


class AgeRestriction(BaseModel):
    min_age: Optional[int] = Field(None, ge=13, le=100)
    max_age: Optional[int] = Field(None, ge=13, le=100)


class CancellationPolicy(BaseModel):
    cutoff_hours: float = Field(24, ge=0)
    refund_percentage: float = Field(100, ge=0, le=100)


class Game(BaseModel):
    title: str = Field(..., max_length=100)
    description: str = Field(..., max_length=2000)
    party_notes: str = Field("", max_length=500)
    system: GameSystem
    custom_system: Optional[str] = Field(None, max_length=50)
    platform: Platform
    session_type: SessionType
    experience_level: ExperienceLevel
    gm_id: str = Field(..., description="Hosting GM ObjectId as string")
    price: float = Field(..., ge=0)
    currency: str = "USD"
    capacity: int = Field(..., ge=1, le=20)
    booked_seats: int = Field(0, ge=0)
    available_seats: int = Field(..., ge=0)
    schedule: Schedule
    location: Optional[Location] = None
    online_details: Optional[OnlineDetails] = None
    tags: List[str] = Field(default_factory=list)
    age_restriction: Optional[AgeRestriction] = None
    booking_type: BookingType = "instant"
    cancellation_policy: CancellationPolicy = Field(default_factory=CancellationPolicy)
    is_active: bool = True
    is_early_bird: bool = False
    early_bird_discount: Optional[float] = Field(None, ge=0, le=50)
    banner_image: Optional[str] = Field(None, max_length=200)
    icon_image: Optional[str] = Field(None, max_length=200)


class Companion(BaseModel):
    name: str
    email: Optional[EmailStr] = None


class Booking(BaseModel):
    game_id: str = Field(..., description="Game ObjectId as string")
    player_id: str = Field(..., description="User ObjectId as string")
    gm_id: str = Field(..., description="Hosting GM, denormalised from the game")
    number_of_seats: int = Field(..., ge=1)
    companions: List[Companion] = Field(default_factory=list)
    status: BookingStatus = "pending"
    total_amount: float = Field(..., ge=0)
    currency: str = "USD"
    payment_intent_id: Optional[str] = None
    special_requests: Optional[str] = None
    refund_amount: Optional[float] = None
    cancelled_at: Optional[datetime] = None


class Review(BaseModel):
    game_id: str
    reviewer_id: str
    gm_id: str
    rating: int = Field(..., ge=1, le=5)
    title: str = Field(..., max_length=100)
    comment: str = Field(..., max_length=2000)
    private_feedback: Optional[str] = Field(None, max_length=2000)
    is_public: bool = True
    is_verified: bool = True


# -----------------------------------------------------------------------------
# Social
# -----------------------------------------------------------------------------
class Conversation(BaseModel):
    participants: List[str]
    is_group: bool = False
    group_name: Optional[str] = None
    group_description: Optional[str] = None
    created_by: str
    last_message_id: Optional[str] = None
    last_activity: datetime


class MessageMetadata(BaseModel):
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    file_type: Optional[str] = None
    image_url: Optional[str] = None


class Message(BaseModel):
    sender_id: str
    recipient_id: Optional[str] = Field(None, description="Other participant of a direct conversation")
    conversation_id: str
    content: str = Field(..., min_length=1)
    message_type: MessageType = "text"
    is_read: bool = False
    read_at: Optional[datetime] = None
    related_game_id: Optional[str] = None
    metadata: Optional[MessageMetadata] = None


class FriendRequest(BaseModel):
    sender_id: str
    recipient_id: str
    status: FriendRequestStatus = "pending"
    message: Optional[str] = Field(None, max_length=500)


class Friendship(BaseModel):
    user1: str = Field(..., description="Lower of the two user ids")
    user2: str = Field(..., description="Higher of the two user ids")


class NotificationMetadata(BaseModel):
    icon: Optional[str] = None
    color: Optional[str] = None
    expires_at: Optional[datetime] = None


class Notification(BaseModel):
    user_id: str
    type: NotificationType
    title: str
    message: str
    related_id: Optional[str] = None
    is_read: bool = False
    priority: NotificationPriority = "medium"
    category: NotificationCategory
    action_url: Optional[str] = None
    metadata: Optional[NotificationMetadata] = None


class Favorite(BaseModel):
    user_id: str
    gm_id: str


# -----------------------------------------------------------------------------
# Platform
# -----------------------------------------------------------------------------
class Setting(BaseModel):
    site_name: str = "Tabletop Tavern"
    description: str = "Connect with Game Masters and join amazing RPG sessions"
    maintenance_mode: bool = False
    registration_enabled: bool = True
    max_games_per_user: int = Field(5, ge=1, le=20)
    session_duration: int = Field(240, ge=60, le=480, description="Minutes")
    auto_approve_gms: bool = False
    email_notifications: bool = True
    system_notifications: bool = True
