"""ExamCoach access HTTP API"""
