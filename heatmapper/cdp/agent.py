from __future__ import annotations

PAGE_AGENT_VERSION = "3"
BINDING_NAME = "__heatmapEmit"


# Self-contained and idempotent: re-running it on a page that already carries the same
# version is a no-op. It exposes `globalThis.__heatmapAgent` with:
# - ids: stable integer ids for elements (Map id->Element, WeakMap Element->id)
# - sample/rects/attached/describe/frameworks: read-only queries by id
# - longtasks.start/stop: PerformanceObserver("longtask") batches -> binding
# - visibility.start/observe/stop: IntersectionObserver batches -> binding
# - overlay.create/update/hide/remove/removeAll: absolutely positioned overlay nodes
# Observer batches are pushed through the `__heatmapEmit` binding as JSON strings.
PAGE_AGENT_SOURCE = r"""
(() => {
  const VERSION = "3";
  const BINDING = "__heatmapEmit";
  const g = globalThis;

  if (g.__heatmapAgent && g.__heatmapAgent.__version === VERSION) {
    return { ok: true, already: true, version: VERSION };
  }
  if (g.__heatmapAgent && typeof g.__heatmapAgent.dispose === "function") {
    try { g.__heatmapAgent.dispose(); } catch (_e) {}
  }

  const byId = new Map();
  const idOf = new WeakMap();
  let nextId = 1;

  function handleFor(el) {
    let id = idOf.get(el);
    if (id === undefined) {
      id = nextId++;
      idOf.set(el, id);
      byId.set(id, el);
    }
    return id;
  }

  function live(id) {
    const el = byId.get(id);
    if (!el) return null;
    if (!document.body || !document.body.contains(el)) {
      byId.delete(id);
      return null;
    }
    return el;
  }

  function emit(kind, entries) {
    if (typeof g[BINDING] !== "function") return;
    try {
      g[BINDING](JSON.stringify({ kind, entries }));
    } catch (_e) {}
  }

  function box(r) {
    return { x: r.left, y: r.top, width: r.width, height: r.height };
  }

  function sample(selectors, max) {
    let found = [];
    try {
      found = Array.from(document.querySelectorAll(selectors.join(",")));
    } catch (_e) {
      for (const sel of selectors) {
        try {
          found.push(...document.querySelectorAll(sel));
        } catch (_e2) {}
      }
    }
    const unique = Array.from(new Set(found)).filter(
      (el) => !el.closest || !el.closest(".perf-heatmap-overlay")
    );
    const step = Math.max(1, Math.floor(unique.length / Math.max(1, max)));
    const out = [];
    for (let i = 0; i < unique.length && out.length < max; i += step) {
      out.push(handleFor(unique[i]));
    }
    return out;
  }

  function rects(ids) {
    const out = {};
    for (const id of ids) {
      const el = live(id);
      if (el) out[id] = box(el.getBoundingClientRect());
    }
    return out;
  }

  function attached(ids) {
    return ids.filter((id) => live(id) !== null);
  }

  function describe(ids) {
    const out = {};
    for (const id of ids) {
      const el = live(id);
      if (!el) continue;
      out[id] = {
        tag: String(el.tagName || "").toLowerCase(),
        id: el.id || null,
        classes: el.classList ? Array.from(el.classList) : [],
      };
    }
    return out;
  }

  function frameworkOf(el) {
    const keys = Object.keys(el);
    if (keys.some((k) => k.startsWith("__reactFiber") || k.startsWith("__reactInternalInstance")) || el._reactRootContainer) {
      return "React";
    }
    if (el.__ngContext__ !== undefined || (el.hasAttribute && el.hasAttribute("ng-version"))) {
      return "Angular";
    }
    if (el.getAttributeNames && el.getAttributeNames().some((a) => a.startsWith("_ngcontent"))) {
      return "Angular";
    }
    if (el.__vue__ || el.__vueParentComponent || el.__vue_app__) {
      return "Vue";
    }
    if (el.getAttributeNames && el.getAttributeNames().some((a) => a.startsWith("data-v-"))) {
      return "Vue";
    }
    return null;
  }

  function frameworks(ids) {
    const out = {};
    for (const id of ids) {
      const el = live(id);
      if (el) out[id] = frameworkOf(el);
    }
    return out;
  }

  let longTaskObserver = null;
  const longtasks = {
    supported() {
      try {
        return typeof PerformanceObserver !== "undefined" &&
          (PerformanceObserver.supportedEntryTypes || []).includes("longtask");
      } catch (_e) {
        return false;
      }
    },
    start() {
      if (longTaskObserver) return { ok: true };
      if (!this.supported()) return { ok: false, reason: "PerformanceObserver longtask not supported" };
      try {
        longTaskObserver = new PerformanceObserver((list) => {
          const entries = list.getEntries().map((e) => ({
            duration: e.duration,
            startTime: e.startTime,
            attribution: (e.attribution && e.attribution[0] && e.attribution[0].name) || "unknown",
          }));
          if (entries.length) emit("longtask", entries);
        });
        longTaskObserver.observe({ entryTypes: ["longtask"] });
        return { ok: true };
      } catch (e) {
        longTaskObserver = null;
        return { ok: false, reason: String(e && e.message ? e.message : e) };
      }
    },
    stop() {
      if (longTaskObserver) longTaskObserver.disconnect();
      longTaskObserver = null;
    },
  };

  let intersection = null;
  const visibility = {
    start() {
      if (intersection) return { ok: true };
      if (typeof IntersectionObserver === "undefined") {
        return { ok: false, reason: "IntersectionObserver not supported" };
      }
      intersection = new IntersectionObserver(
        (entries) => {
          const out = [];
          for (const e of entries) {
            out.push({ id: handleFor(e.target), intersecting: e.isIntersecting, rect: box(e.boundingClientRect) });
          }
          if (out.length) emit("visibility", out);
        },
        { threshold: 0.1, rootMargin: "50px" }
      );
      return { ok: true };
    },
    observe(ids) {
      if (!intersection) return 0;
      let n = 0;
      for (const id of ids) {
        const el = live(id);
        if (el) {
          intersection.observe(el);
          n++;
        }
      }
      return n;
    },
    stop() {
      if (intersection) intersection.disconnect();
      intersection = null;
    },
  };

  const overlays = new Map();
  const overlay = {
    create(id) {
      if (overlays.has(id)) return true;
      const node = document.createElement("div");
      node.className = "perf-heatmap-overlay";
      node.dataset.heatmapId = String(id);
      Object.assign(node.style, {
        position: "absolute",
        pointerEvents: "none",
        zIndex: "2147483646",
        boxSizing: "border-box",
        borderRadius: "4px",
        display: "none",
      });
      const badge = document.createElement("span");
      badge.className = "perf-badge";
      Object.assign(badge.style, {
        position: "absolute",
        top: "0",
        right: "0",
        font: "bold 10px monospace",
        padding: "1px 3px",
        background: "rgba(0, 0, 0, 0.7)",
        color: "#fff",
        display: "none",
      });
      node.appendChild(badge);
      (document.body || document.documentElement).appendChild(node);
      overlays.set(id, node);
      return true;
    },
    update(id, s) {
      const node = overlays.get(id);
      if (!node) return false;
      Object.assign(node.style, {
        left: s.left + "px",
        top: s.top + "px",
        width: s.width + "px",
        height: s.height + "px",
        background: s.background,
        border: "2px solid " + s.border,
        display: "block",
      });
      node.dataset.severity = s.severity;
      if (s.tooltip) node.title = s.tooltip;
      else node.removeAttribute("title");
      const badge = node.querySelector(".perf-badge");
      if (badge) {
        badge.textContent = s.badge || "";
        badge.style.display = s.badge ? "block" : "none";
      }
      return true;
    },
    hide(id) {
      const node = overlays.get(id);
      if (node) node.style.display = "none";
      return !!node;
    },
    remove(id) {
      const node = overlays.get(id);
      overlays.delete(id);
      if (node) node.remove();
      return !!node;
    },
    removeAll() {
      for (const node of overlays.values()) node.remove();
      overlays.clear();
      for (const node of document.querySelectorAll(".perf-heatmap-overlay")) node.remove();
      return true;
    },
  };

  function viewport() {
    return {
      width: g.innerWidth || 0,
      height: g.innerHeight || 0,
      scrollX: g.scrollX || g.pageXOffset || 0,
      scrollY: g.scrollY || g.pageYOffset || 0,
    };
  }

  function dispose() {
    longtasks.stop();
    visibility.stop();
    overlay.removeAll();
    byId.clear();
  }

  g.__heatmapAgent = {
    __version: VERSION,
    viewport,
    sample,
    rects,
    attached,
    describe,
    frameworks,
    longtasks,
    visibility,
    overlay,
    dispose,
  };
  return { ok: true, already: false, version: VERSION };
})()
"""

__all__ = ["BINDING_NAME", "PAGE_AGENT_SOURCE", "PAGE_AGENT_VERSION"]
