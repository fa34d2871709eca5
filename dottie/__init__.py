"""Dottie: conversational response coordination for menstrual-health chat."""
