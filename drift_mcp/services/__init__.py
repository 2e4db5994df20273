"""Сервисы: discovery, клиент Tusk Drift API, форматирование"""
