"""
Configuración clave/valor de la aplicación (hora de cierre automático).
"""
