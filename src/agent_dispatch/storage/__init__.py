"""Relational storage for projects, repositories, agents and tasks."""
