# Session state = everything needed to resume a planning dialogue at the next turn.

# It is "the NOW" of the conversation:

# Lifecycle stage (intake, gathering, confirming, completed)

# Slots gathered so far and the candidate plan, kept in separate fields

# Flags (e.g. "awaiting plan confirmation", "plan confirmed")

# The activity this session created or is refining

# The append-only conversation history
