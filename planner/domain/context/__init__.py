# This module holds the conversation context of a planning session

# +---------------------+
# |       Slots         |   (Business data, merged never replaced)
# |---------------------|
# | Activity type       |
# | Location            |
# | Timing              |
# | Budget + extras     |
# +---------------------+

# +---------------------+
# |   Control flags     |   (Machine bookkeeping, never sent as slots)
# |---------------------|
# | Awaiting confirm    |
# | Plan confirmed      |
# | First interaction   |
# | Mode, linked id     |
# +---------------------+

#    \    /
#     \  /
#      \/
# +------------------------------+
# |     Conversation session     |   (One durable record per dialogue)
# |------------------------------|
# | State (intake..completed)    |
# | Conversation history         |
# | Candidate plan (own field)   |
# +------------------------------+
#         |
#         v
#   [guardrails / gateway / materializer]
