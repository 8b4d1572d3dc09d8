# WebSocket event type definitions.
# Every frame is a JSON object whose "type" is one of the names below.

# ── Inbound (client → server) ────────────────────────────────────────────────

REGISTER_CONNECTION = "register-connection"
HEARTBEAT = "heartbeat"

INITIATE_CALL = "initiate-call"
ACCEPT_CALL = "accept-call"
REJECT_CALL = "reject-call"
END_CALL = "end-call"
GET_CALL_STATS = "get-call-stats"

SIGNAL = "signal"  # relayed verbatim, same name in both directions

MARK_DELIVERED = "mark-delivered"
MARK_READ = "mark-read"

TYPING = "typing"
STOP_TYPING = "stop-typing"

# ── Outbound (server → client) ───────────────────────────────────────────────

CONNECTION_REGISTERED = "connection-registered"

CALL_INITIATED = "call-initiated"
INCOMING_CALL = "incoming-call"
CALL_ACCEPTED = "call-accepted"
CALL_REJECTED = "call-rejected"
CALL_ENDED = "call-ended"
ROOM_READY = "room-ready"
CALL_STATS = "call-stats"

UNREACHABLE = "unreachable"
ERROR = "error"

MESSAGE_DELIVERED = "message-delivered"
MESSAGE_READ = "message-read"
MESSAGES_READ = "messages-read"

USER_TYPING = "user-typing"  # ephemeral, never stored

# call-ended reasons
REASON_HANGUP = "hangup"
REASON_DISCONNECT = "disconnect"
