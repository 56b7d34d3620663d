 # This module handles conversation context

# +---------------------+
# |   Durable tier      |   (Optional, external, no system messages)
# |---------------------|
# | File ledger         |
# | Document store      |
# +---------------------+
#         ^
#         | scheduled writes
# +---------------------+
# |   Memory tier       |   (Authoritative, TTL + capacity bounded)
# |---------------------|
# | System message @ 0  |
# | Last N turns        |
# | Last activity       |
# +---------------------+

#    \    /
#     \  /
#      \/
# +------------------------------+
# |           Prompt             |   (Assembled per model call)
# |------------------------------|
# | Summary (optional)           |
# | Refreshed system context     |
# | Prior turns                  |
# | Date preamble + user text    |
# | Format reminder              |
# +------------------------------+
#         |
#         v
#   [model / actions / follow-up]
