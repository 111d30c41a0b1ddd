"""shadowlm: orquestación de consultas sobre una página de chat controlada."""
