"""
ExportPro App - Inventario y empaque para exportadores
Facturas de proveedor, inventario de productos, envíos por cajas y documentos de embarque
"""

# Version de la app
__version__ = '1.0.0'

# Constantes de la aplicación
APP_NAME = 'ExportPro'
APP_DESCRIPTION = 'Sistema de inventario, empaque y documentos de exportación'
