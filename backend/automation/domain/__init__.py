"""Domain layer - entities, enums, errors and collaborator interfaces"""
