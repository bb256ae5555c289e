"""
Single-purpose pipeline stages.

Each stage builds one prompt, issues one completion call and turns the reply
into a StageOutput (or a score, for the confidence stage).
"""
