from relay_server.repository.media.chat_message_repository import ChatMessageRepository
from relay_server.repository.media.user_presence_repository import UserPresenceRepository

__all__ = [
    'ChatMessageRepository',
    'UserPresenceRepository'
]
