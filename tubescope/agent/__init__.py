"""Agentic chat over a video's transcript.

A chat provider streams text and ``search_transcript`` tool calls; the loop
in ``loop`` executes at most ``agent_max_tool_calls`` searches per turn.
"""
