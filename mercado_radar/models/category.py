"""Fixed product category enumeration."""

import enum


class Category(str, enum.Enum):
    GROCERY = "GROCERY"
    PRODUCE = "PRODUCE"
    MEAT = "MEAT"
    BAKERY = "BAKERY"
    DAIRY = "DAIRY"
    FROZEN = "FROZEN"
    BEVERAGES = "BEVERAGES"
    CLEANING = "CLEANING"
    PERSONAL_CARE = "PERSONAL_CARE"
    PET = "PET"
    OTHER = "OTHER"

    @classmethod
    def from_label(cls, label: str | None) -> "Category":
        """Map a model-produced label onto the enumeration, ``OTHER`` when unknown."""
        if not label:
            return cls.OTHER
        key = str(label).strip().upper().replace(" ", "_").replace("-", "_")
        try:
            return cls[key]
        except KeyError:
            return cls.OTHER


CATEGORY_DESCRIPTIONS: dict[Category, str] = {
    Category.GROCERY: "Mercearia: arroz, feijão, massas, óleo, açúcar, café, enlatados, temperos",
    Category.PRODUCE: "Hortifruti: frutas, verduras, legumes e ovos",
    Category.MEAT: "Açougue: carnes bovinas, suínas, frango, peixes e frios",
    Category.BAKERY: "Padaria: pães, bolos, biscoitos e salgados",
    Category.DAIRY: "Laticínios: leite, iogurte, queijos, manteiga e requeijão",
    Category.FROZEN: "Congelados: pratos prontos, sorvetes, pizzas e empanados",
    Category.BEVERAGES: "Bebidas: refrigerantes, sucos, águas, cervejas e vinhos",
    Category.CLEANING: "Limpeza: sabão, detergente, amaciante, desinfetante e utensílios",
    Category.PERSONAL_CARE: "Higiene e beleza: sabonete, xampu, creme dental, fraldas e papel higiênico",
    Category.PET: "Pet: rações e produtos para animais",
    Category.OTHER: "Outros: qualquer produto que não se encaixe nas categorias acima",
}
