"""Services Package

Service layer of the execution core:
- guardrails/: payload checks and the guardrail runner
- planning/: plan parsing, prompt construction and the plan execution engine
"""
