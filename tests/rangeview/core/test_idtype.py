from rangeview.core.idtype import IDType, IDTypeRegistry, LocalIDAssigner


def test_resolve_is_idempotent():
    registry = IDTypeRegistry()

    cell = registry.resolve("Cell")

    assert registry.resolve("Cell") is cell
    assert cell.id == "Cell"
    assert cell.names == "Cells"


def test_resolve_keeps_first_registered_handle():
    registry = IDTypeRegistry()
    gene = IDType(id="Gene", name="gene", names="genes")

    assert registry.resolve(gene) is gene
    assert registry.resolve("Gene") is gene
    assert registry.resolve(IDType(id="Gene")) is gene


def test_registries_are_independent():
    a = IDTypeRegistry()
    b = IDTypeRegistry()

    assert a.resolve("Cell") is not b.resolve("Cell")
    assert a.resolve("Cell") == b.resolve("Cell")


def test_product_types():
    registry = IDTypeRegistry()

    product = registry.resolve_product("Cell", "Gene")

    assert product.id == "CellXGene"
    assert registry.resolve_product(registry.resolve("Cell"), "Gene") is product
    assert [t.id for t in registry.list()] == ["Cell", "Gene"]


def test_local_assigner_is_stable_across_calls():
    assign = LocalIDAssigner()

    assert assign(["a", "b", "a"]).to_list() == [0, 1, 0]
    assert assign(["c", "b"]).to_list() == [2, 1]
    assert len(assign) == 3
