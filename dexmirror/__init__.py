"""DexMirror copy-trading service"""
