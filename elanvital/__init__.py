"""
Elanvital 일정/할 일 에이전트
"""
