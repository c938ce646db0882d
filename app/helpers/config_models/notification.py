from pydantic import BaseModel, Field


class NotificationModel(BaseModel):
    apns_badge: int = Field(default=1, ge=0)
    apns_sound: str = "default"
    fallback_sender_name: str = "Someone"
    fallback_space_name: str = "a space"
    personal_channel: str = "reminders"
    personal_title: str = "Reminder"
    ping_body_tpl: str = 'About "{item_title}" in {space_name}'
    ping_channel: str = "nudges"
    ping_title_tpl: str = "{sender_name} nudged you!"
    space_channel: str = "space_reminders"
