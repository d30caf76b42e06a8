"""SQLite-backed task queue with a clarification-aware lifecycle.

Tasks move through an explicit transition table. At most one task waits on a
user answer at a time; further clarification requests are parked on the asking
task and promoted in arrival order once the waiting slot frees up. Tasks that
share a task group see each other's files, results and conversation, and never
anything from another group.
"""
