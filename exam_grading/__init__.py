"""Exam submission grading and result release service."""
