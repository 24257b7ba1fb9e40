# ==============================================================================
# APP_INVENTORY - Préstamos, devoluciones y transferencias de inventario
# ==============================================================================
# Capas:
#   models/        → Entidades y enumeraciones
#   repositories/  → Persistencia JSON
#   services/      → Lógica de negocio (máquina de estados, auditoría, ...)
#   main.py        → API HTTP (Flask)
# ==============================================================================

__version__ = '1.0.0'
