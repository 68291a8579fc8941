"""
mailtriage

Pulls unread email over IMAPS and triages each message with a hosted
language model: category, one-sentence summary, suggested reply and
recommended action. Long prompts are compacted before completion.
"""

__version__ = "1.0.0"
__app_name__ = "mailtriage"
