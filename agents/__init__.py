"""
The agent strategies. Each module exposes one `run_*_agent(agent_input, services)`
function returning an AgentExecutionResult; `orchestrator.AGENT_REGISTRY`
maps chat modes to them.
"""
