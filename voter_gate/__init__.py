"""
Voter Gate

One-person-one-vote admission control using:
- Tesseract OCR with heuristic field extraction for voter enrollment
- DeepFace embeddings with Euclidean matching for live verification
- FastAPI for the booth and enrollment API
"""

__version__ = "1.0.0"
