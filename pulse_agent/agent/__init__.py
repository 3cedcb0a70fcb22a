"""
Conversational agent: mention parsing, parameter handling and command execution.
"""
