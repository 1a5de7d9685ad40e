"""Control keywords and fixed replies."""

RESET_KEYWORDS = frozenset({"reset"})
START_KEYWORDS = frozenset({"start", "hello", "hi"})
CANCEL_KEYWORDS = frozenset({"cancel", "stop"})
HELP_KEYWORDS = frozenset({"help"})
STATUS_KEYWORDS = frozenset({"status"})

RATE_LIMITED = "You've sent too many messages. Please try again later."
APOLOGY = (
    "Sorry, something went wrong. Please try again or text 'start' to begin "
    "a new conversation."
)
RESET_ACK = "Your setup has been reset. Text 'start' to begin again."
INVITATION = (
    "Hi! I'm OldVoice. I help you record conversations with your loved ones. "
    "Text 'start' to begin!"
)
HELP = (
    "Welcome to OldVoice! I help you record conversations with loved ones.\n\n"
    "Text 'start' to begin setting up a call.\n"
    "Text 'status' to check your recordings.\n"
    "Text 'cancel' to stop current setup."
)
STATUS = "You have {count} recorded conversations. Text 'start' to record a new one!"
CANCEL_ACK = "Conversation setup cancelled. Text 'start' to begin again."
DECLINED = "Setup cancelled. Text 'start' to try again."
RESTART = "Something went wrong. Please text 'start' to begin again."
RESEND = "I received two messages at once. Please resend your last reply."
COMPLETION_FAILED = (
    "Sorry, something went wrong setting up the call. Please try again later."
)


def normalize_keyword(text: str) -> str:
    return text.strip().lower()
