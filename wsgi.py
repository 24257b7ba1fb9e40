# ==============================================================================
# WSGI Entry Point - Para Gunicorn en producción
# ==============================================================================
# USO:
#   gunicorn wsgi:app --bind 0.0.0.0:$PORT
#
# ESTRUCTURA DEL PROYECTO:
#   repo_root/             <- Directorio de trabajo (en sys.path automáticamente)
#   ├── wsgi.py            <- Este archivo
#   ├── pyproject.toml
#   └── app_inventory/     <- Paquete Python
#       ├── __init__.py
#       ├── main.py
#       ├── services/
#       └── repositories/
#
# La configuración se toma de las variables INVENTORY_* (ver config.py).
# ==============================================================================

from app_inventory.main import create_app

app = create_app()

# ==============================================================================
# PUNTO DE ENTRADA
# ==============================================================================
# Para desarrollo local:
#   python wsgi.py
# ==============================================================================

if __name__ == '__main__':
    app.run(debug=not app.config['PRODUCTION_MODE'], host='0.0.0.0', port=5000)
