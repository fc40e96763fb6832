"""Execution-and-decision loop for chat-driven skill invocations.

A chat message becomes one invocation of an external CLI. Its stdout is read
back into a small set of signals (completed, errored, needs input, continue)
and the loop controller decides whether to launch the next phase on its own
or hand the conversation back to a human.
"""
