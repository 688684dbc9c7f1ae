"""Class chatbot query service: scope gate, retrieval and Socratic answers."""
