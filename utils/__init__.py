"""Shared utilities for the ExamCoach access service"""
