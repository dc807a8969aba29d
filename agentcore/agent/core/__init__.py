"""Provider-agnostic runtime for the agent.

`llm` normalizes vendor SDKs into one streaming event model; `runtime` holds the
turn loop, tool dispatcher, usage accountant and summarizer built on top of it.
"""
