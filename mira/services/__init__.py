from mira.services.conversation_service import ConversationStateController, UserState
from mira.services.dedup_service import DedupCache, build_content_hash
from mira.services.intent_service import EntitySet, Intent, IntentClassifier
from mira.services.rate_limiter import RateLimiter
