"""Dispatch services: capacity allocation, manifests, run lifecycle and deliveries."""
