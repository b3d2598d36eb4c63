"""
Request bodies for the API.

Documents are stored as plain dicts; these models only validate what
clients send.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field


#################
# Auth
#################
class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=20, pattern=r"^[A-Za-z0-9_-]+$")
    email: EmailStr
    password: str


class UserLogin(BaseModel):
    username: str
    password: str


class ForgotPassword(BaseModel):
    username: str
    email: EmailStr


class ForgotUsername(BaseModel):
    email: EmailStr


class PasswordReset(BaseModel):
    password: str


class PasswordChange(BaseModel):
    old_password: str
    password: str


class EmailChange(BaseModel):
    email: EmailStr
    password: str


class GoogleLogin(BaseModel):
    access_token: str


#################
# Users
#################
class UsernameBody(BaseModel):
    username: str


class PreferencesUpdate(BaseModel):
    display_name: Optional[str] = Field(None, max_length=30)
    about: Optional[str] = Field(None, max_length=200)
    gender: Optional[Literal["woman", "man", "i prefer not to say"]] = None
    language: Optional[str] = None
    nsfw: Optional[bool] = None
    allow_follow: Optional[bool] = None
    content_visibility: Optional[bool] = None
    mentions: Optional[bool] = None
    comments: Optional[bool] = None
    upvotes: Optional[bool] = None
    replies: Optional[bool] = None
    new_followers: Optional[bool] = None
    chat_requests: Optional[bool] = None
    new_follower_email: Optional[bool] = None
    chat_request_email: Optional[bool] = None
    unsubscribe_from_all_emails: Optional[bool] = None


#################
# Subreddits
#################
class SubredditCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=21, pattern=r"^[A-Za-z0-9_]+$")
    description: str = ""
    category: str = "General"
    language: str = "English"
    privacy_mode: Literal["public", "restricted", "private"] = "public"
    is_nsfw: bool = False


class ModeratorInvite(BaseModel):
    username: str
    manage_users: bool = False
    manage_settings: bool = False
    manage_posts_and_comments: bool = False
    everything: bool = False


class MemberInvite(BaseModel):
    username: str


class SubredditUserAction(BaseModel):
    username: str
    reason: Optional[str] = None


class RuleCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    applies_to: Literal["posts", "comments", "both"] = "both"


class SubredditSettingsUpdate(BaseModel):
    description: Optional[str] = None
    welcome_message: Optional[str] = None
    privacy_mode: Optional[Literal["public", "restricted", "private"]] = None
    category: Optional[str] = None
    language: Optional[str] = None
    is_nsfw: Optional[bool] = None
    allow_images: Optional[bool] = None
    allow_polls: Optional[bool] = None
    allow_links: Optional[bool] = None
    allow_text: Optional[bool] = None
    allow_crossposting: Optional[bool] = None
    archive_posts: Optional[bool] = None


class SuggestedSort(BaseModel):
    sort: Literal["best", "hot", "new", "top", "most_comments", "none"]


#################
# Posts & Comments
#################
class PostCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    content: str = ""
    destination: Literal["profile", "subreddit"] = "profile"
    subreddit: Optional[str] = None
    type: Literal["post", "poll", "link"] = "post"
    link: Optional[str] = None
    options: List[str] = []
    voting_length_days: int = Field(3, ge=1, le=7)
    is_nsfw: bool = False
    is_spoiler: bool = False
    is_oc: bool = False


class PostUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=300)
    content: Optional[str] = None


class PostRef(BaseModel):
    post_id: str


class SaveRequest(BaseModel):
    id: str
    category: Literal["post", "comment"]


class PollVote(BaseModel):
    post_id: str
    option: int = Field(..., ge=0)


class CommentCreate(BaseModel):
    post_id: str
    content: str = Field(..., min_length=1, max_length=10000)
    parent_id: Optional[str] = None


class CommentUpdate(BaseModel):
    content: str = Field(..., min_length=1, max_length=10000)


class VoteRequest(BaseModel):
    item_id: str
    item_type: Literal["post", "comment"]
    direction: Literal[-1, 0, 1]


#################
# Messaging
#################
class MessageCompose(BaseModel):
    recipient: str
    subject: str = Field(..., min_length=1, max_length=100)
    message: str = Field(..., min_length=1, max_length=10000)
    send_to_subreddit: bool = False
    from_subreddit: Optional[str] = None


class ChatManage(BaseModel):
    chat_id: str
    accept: bool


class ChatSend(BaseModel):
    message: str = Field(..., min_length=1, max_length=10000)


#################
# Notifications
#################
class NotificationRef(BaseModel):
    notification_id: str


class NotificationSettings(BaseModel):
    subreddit: Optional[str] = None
    post_id: Optional[str] = None
    comment_id: Optional[str] = None
    type: Optional[Literal["posts", "comments"]] = None


#################
# Reports & Moderation
#################
USER_REPORT_TYPES = Literal["username", "display name", "profile image", "banner image", "bio"]
REPORT_REASONS = Literal[
    "rule break",
    "harassment",
    "threatening violence",
    "hate",
    "minor abuse or sexualization",
    "sharing personal information",
    "non-consensual intimate media",
    "prohibited transaction",
    "impersonation",
    "copyright violation",
    "trademark violation",
    "self-harm or suicide",
    "spam",
]


class UserReport(BaseModel):
    reported_username: str
    report_type: USER_REPORT_TYPES
    reason: REPORT_REASONS
    details: Optional[str] = None


class ContentReport(BaseModel):
    item_id: str
    item_type: Literal["post", "comment"]
    reason: REPORT_REASONS
    details: Optional[str] = None


class ModerationAction(BaseModel):
    item_id: str
    item_type: Literal["post", "comment"]
