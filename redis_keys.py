REDIS_USER_KEY = "user:{user_id}" # hash: id, name, email
REDIS_CONVERSATION_KEY = "conversation:{conversation_id}" # hash: participants and timestamps
REDIS_CONVERSATION_PAIR_KEY = "conversation:pair:{low}:{high}" # conversation id for a participant pair
REDIS_CONVERSATION_SEQ = "conversation:seq" # counter for conversation ids
REDIS_USER_CONVERSATIONS_KEY = "user:conversations:{user_id}" # zset of conversation ids scored by last activity
REDIS_CONVERSATION_MESSAGES_KEY = "conversation:messages:{conversation_id}" # list of message ids, oldest first
REDIS_MESSAGE_KEY = "message:{message_id}" # hash: message record
REDIS_MESSAGE_SEQ = "message:seq" # counter for message ids
REDIS_UNREAD_KEY = "conversation:unread:{conversation_id}:{user_id}" # set of unread message ids for a reader

# **Example `conversation:{id}` hash fields**
# - `id` = `{conversationId}`
# - `participant1_id` = lower user id
# - `participant2_id` = higher user id
# - `created_at` = ISO timestamp
# - `updated_at` = ISO timestamp of the last message

# **Example `message:{id}` hash fields**
# - `id`, `conversation_id`, `sender_id`, `sender_name`
# - `content`, `message_type`
# - `created_at` = ISO timestamp
