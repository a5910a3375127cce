"""Domaine : enums de référence, moments et modèles de lecture."""
