"""Catalog model used by checkout to resolve prices and decrement stock.

Catalog management (CRUD, categories, search) lives outside this service;
checkout only reads ``price_cents`` and writes ``stock``.
"""

from django.db import models


class ProductModel(models.Model):
    name = models.CharField(max_length=200)
    price_cents = models.BigIntegerField()
    stock = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "products"
        ordering = ["id"]
