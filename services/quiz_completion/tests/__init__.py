# services/quiz_completion/tests/__init__.py
