# Context handling for a single agent
#
# +---------------------+
# |      History        |   (Unbounded, append-only)
# |---------------------|
# | user / assistant    |
# | error entries       |
# | summaries           |
# +---------------------+
#
#    \    /
#     \  /
#      \/
# +------------------------------+
# |        Context window        |   (Bounded working set, drop-oldest)
# |------------------------------|
# | most recent 50 messages      |
# | summary of older turns       |
# +------------------------------+
#         |
#         v   last 10 + system prompt
#   [chat service request]
