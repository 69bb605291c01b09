"""Constants for direct replies and supervisor responses."""

# Greetings answered without escalating
GREETING_INDICATORS = [
    "hi",
    "hello",
    "hey",
    "good morning",
    "good afternoon",
    "good evening",
]

# Exact greetings that open a conversation
OPENING_GREETINGS = ["hi", "hello"]

THANKS_INDICATORS = [
    "thank you",
    "thanks",
    "thank",
    "appreciate",
]

REPEAT_INDICATORS = [
    "repeat",
    "say that again",
    "what did you say",
]

GREETING_REPLY = "Hello! How can I assist you today?"
THANKS_REPLY = "You're welcome! Is there anything else I can help you with?"
REPEAT_REPLY = "Could you please repeat your question? I want to make sure I understand correctly."
FALLBACK_REPLY = "How can I help you today?"

# Spoken before an escalated answer
FILLER_PHRASES = [
    "Just a second.",
    "Let me check.",
    "One moment.",
    "Let me look into that.",
    "Give me a moment.",
    "Let me see.",
]

APOLOGY_REPLY = "I'm sorry, something went wrong while handling your message. Please try again."
UNCLEAR_AUDIO_REPLY = "I couldn't make out what you said. Could you please say that again?"
